"""Tests for thread resolution."""

from app.models.thread import Thread
from app.services.normalizer import normalize_mime
from app.services.reconciler import reconcile_email
from app.services.threading_resolver import resolve_thread_id


def store(db, account_id, draft):
    thread_id = resolve_thread_id(db, account_id, draft)
    reconcile_email(db, account_id, draft, thread_id)
    db.commit()
    return thread_id


class TestResolveThreadId:
    def test_explicit_thread_id_wins(self, db, imap_account, mime):
        draft = normalize_mime(mime())
        draft.thread_id = "remote-thread"
        assert resolve_thread_id(db, imap_account.id, draft) == "remote-thread"
        assert db.query(Thread).count() == 0

    def test_new_thread_for_subject(self, db, imap_account, mime):
        draft = normalize_mime(mime(subject="Offer letter"))
        thread_id = resolve_thread_id(db, imap_account.id, draft)

        thread = db.get(Thread, thread_id)
        assert thread is not None
        assert thread.subject == "Offer letter"
        assert thread.account_id == imap_account.id
        assert thread.last_message_date == draft.sent_at

    def test_reply_joins_parent_thread(self, db, imap_account, mime):
        parent_thread = store(db, imap_account.id, normalize_mime(mime(message_id="<p1@x>", subject="Hi")))

        reply = normalize_mime(mime(message_id="<r1@x>", subject="Re: Hi", in_reply_to="<p1@x>"))
        assert resolve_thread_id(db, imap_account.id, reply) == parent_thread

    def test_first_reference_used_without_in_reply_to(self, db, imap_account, mime):
        parent_thread = store(db, imap_account.id, normalize_mime(mime(message_id="<p1@x>", subject="Hi")))

        reply = normalize_mime(mime(message_id="<r2@x>", subject="Re: Hi", references="<p1@x> <other@x>"))
        assert resolve_thread_id(db, imap_account.id, reply) == parent_thread

    def test_unknown_reference_starts_new_thread(self, db, imap_account, mime):
        parent_thread = store(db, imap_account.id, normalize_mime(mime(message_id="<p1@x>", subject="Hi")))

        reply = normalize_mime(mime(message_id="<r3@x>", subject="Re: Hi", in_reply_to="<missing@x>"))
        thread_id = resolve_thread_id(db, imap_account.id, reply)
        assert thread_id is not None
        assert thread_id != parent_thread

    def test_no_subject_no_reference_is_unthreaded(self, db, imap_account, mime):
        draft = normalize_mime(mime(subject=None))
        assert resolve_thread_id(db, imap_account.id, draft) is None
        assert db.query(Thread).count() == 0

    def test_reference_lookup_is_scoped_to_account(self, db, imap_account, mime):
        store(db, "other-account", normalize_mime(mime(message_id="<p1@x>", subject="Hi")))

        reply = normalize_mime(mime(message_id="<r4@x>", subject="Re: Hi", in_reply_to="<p1@x>"))
        thread_id = resolve_thread_id(db, imap_account.id, reply)
        assert db.get(Thread, thread_id).account_id == imap_account.id
