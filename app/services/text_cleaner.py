"""
Text helpers for message previews.

Handles:
1. HTML → Plain Text conversion
2. Noise removal (signatures, reply history, client footers)
3. Snippet building for the thread list
"""

import re
from bs4 import BeautifulSoup

# Characters kept in a snippet
SNIPPET_LENGTH = 200

# Patterns for noise removal
SIGNATURE_PATTERNS = [
    r'thanks\s*(&|and)?\s*regards?.*$',
    r'best\s*regards?.*$',
    r'warm\s*regards?.*$',
    r'kind\s*regards?.*$',
    r'regards,?\s*$',
    r'sincerely.*$',
    r'^--\s*$',  # RFC 3676 signature separator
]

REPLY_PATTERNS = [
    r'^on\s+.+wrote:.*$',
    r'^from:\s+.+$',
    r'^sent:\s+.+$',
    r'^>+\s*.*$',  # Quoted text
    r'^-{3,}.*original\s*message.*-{3,}$',
]

NOISE_PATTERNS = [
    r'\[image:.*?\]',
    r'\[cid:.*?\]',
    r'sent\s*from\s*(my\s*)?(iphone|android|mobile).*$',
    r'get\s*outlook\s*for.*$',
]


def html_to_text(raw_html: str) -> str:
    """
    Convert an HTML email body to plain text.

    Args:
        raw_html: Raw HTML string from email body

    Returns:
        Plain text with normalized whitespace
    """
    if not raw_html:
        return ""

    soup = BeautifulSoup(raw_html, "html.parser")

    # Remove script, style, and head tags
    for tag in soup(['script', 'style', 'head', 'meta', 'link']):
        tag.decompose()

    # Convert <br> and </p> to newlines
    for br in soup.find_all('br'):
        br.replace_with('\n')
    for p in soup.find_all('p'):
        p.insert_after('\n')

    text = soup.get_text(separator=' ')

    # Normalize whitespace
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r'\n\s*\n', '\n\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text)

    return text.strip()


def remove_noise(text: str) -> str:
    """
    Drop quoted reply history, signatures and mobile-client footers.

    Args:
        text: Plain text email content

    Returns:
        Text with noise removed
    """
    if not text:
        return ""

    cleaned_lines = []

    for line in text.split('\n'):
        line_lower = line.lower().strip()

        # Everything after the reply header is history
        if any(re.match(pattern, line_lower) for pattern in REPLY_PATTERNS):
            break

        if any(re.match(pattern, line_lower) for pattern in SIGNATURE_PATTERNS):
            break

        if any(re.search(pattern, line_lower) for pattern in NOISE_PATTERNS):
            continue

        cleaned_lines.append(line)

    result = '\n'.join(cleaned_lines)
    result = re.sub(r'\n{3,}', '\n\n', result)
    result = re.sub(r'[ \t]+', ' ', result)

    return result.strip()


def build_snippet(body_text: str = "", body_html: str = "", length: int = SNIPPET_LENGTH) -> str:
    """
    Build a one-line preview from the text body, or the HTML body when no
    text part exists.
    """
    text = body_text or html_to_text(body_html)
    cleaned = remove_noise(text) or text
    snippet = re.sub(r'\s+', ' ', cleaned).strip()
    return snippet[:length]
