"""
Tests for the utterance store.
"""

from datetime import datetime

from src.voice_hooks.queue import MessageRole, UtteranceStatus, UtteranceStore


def _statuses_match(store: UtteranceStore) -> bool:
    """Every user message carries the same status as its utterance."""
    for utterance in store.recent_utterances(limit=1000):
        message = store.get_message(utterance.id)
        if message is None or message.status is not utterance.status:
            return False
    return True


class TestAdd:
    def test_add_trims_text_and_starts_pending(self, store):
        utterance = store.add("  hello there  ")

        assert utterance is not None
        assert utterance.text == "hello there"
        assert utterance.status is UtteranceStatus.PENDING

    def test_add_rejects_blank_text(self, store):
        assert store.add("") is None
        assert store.add("   \n\t") is None
        assert store.counts().total == 0
        assert store.recent_messages() == []

    def test_add_mirrors_a_user_message(self, store):
        utterance = store.add("hello")
        message = store.get_message(utterance.id)

        assert message is not None
        assert message.role is MessageRole.USER
        assert message.text == "hello"
        assert message.status is UtteranceStatus.PENDING
        assert message.timestamp == utterance.timestamp

    def test_add_keeps_explicit_timestamp(self, store, at):
        utterance = store.add("hello", at(5))
        assert utterance.timestamp == at(5)

    def test_naive_timestamp_is_treated_as_utc(self, store, at):
        naive = datetime(2025, 1, 1, 12, 0, 3)
        store.add("aware", at(0))
        utterance = store.add("naive", naive)

        assert utterance.timestamp == at(3)
        assert [u.text for u in store.pending_oldest_first()] == ["aware", "naive"]

    def test_assistant_message_has_no_status(self, store):
        message = store.add_assistant_message("Sure thing")

        assert message.role is MessageRole.ASSISTANT
        assert message.status is None
        assert "status" not in message.to_dict()
        assert store.counts().total == 0


class TestTransitions:
    def test_mark_delivered_moves_both_records(self, store):
        utterance = store.add("hello")
        store.mark_delivered(utterance.id)

        assert store.get(utterance.id).status is UtteranceStatus.DELIVERED
        assert store.get_message(utterance.id).status is UtteranceStatus.DELIVERED

    def test_mark_delivered_is_idempotent(self, store):
        utterance = store.add("hello")
        store.mark_delivered(utterance.id)
        store.mark_delivered(utterance.id)

        assert store.get(utterance.id).status is UtteranceStatus.DELIVERED
        assert store.counts().to_dict() == {"total": 1, "pending": 0, "delivered": 1}

    def test_mark_delivered_unknown_id_is_noop(self, store):
        store.add("hello")
        store.mark_delivered("does-not-exist")
        assert store.counts().pending == 1

    def test_mark_delivered_never_regresses_responded(self, store):
        utterance = store.add("hello")
        store.mark_delivered(utterance.id)
        store.mark_responded_all_delivered()
        store.mark_delivered(utterance.id)

        assert store.get(utterance.id).status is UtteranceStatus.RESPONDED

    def test_mark_responded_only_touches_delivered(self, store):
        first = store.add("first")
        second = store.add("second")
        store.mark_delivered(first.id)

        assert store.mark_responded_all_delivered() == 1
        assert store.get(first.id).status is UtteranceStatus.RESPONDED
        assert store.get(second.id).status is UtteranceStatus.PENDING
        assert store.get_message(first.id).status is UtteranceStatus.RESPONDED
        assert store.mark_responded_all_delivered() == 0

    def test_status_sequence_is_monotonic(self, store):
        utterance = store.add("hello")
        seen = [store.get(utterance.id).status]

        store.mark_delivered(utterance.id)
        seen.append(store.get(utterance.id).status)
        store.mark_responded_all_delivered()
        seen.append(store.get(utterance.id).status)
        store.mark_delivered(utterance.id)
        seen.append(store.get(utterance.id).status)

        order = [UtteranceStatus.PENDING, UtteranceStatus.DELIVERED, UtteranceStatus.RESPONDED]
        ranks = [order.index(s) for s in seen]
        assert ranks == sorted(ranks)


class TestDelete:
    def test_delete_pending_removes_both_records(self, store):
        utterance = store.add("oops")

        assert store.delete_pending(utterance.id) is True
        assert store.get(utterance.id) is None
        assert store.get_message(utterance.id) is None
        assert store.counts().total == 0

    def test_delete_refuses_delivered(self, store):
        utterance = store.add("keep me")
        store.mark_delivered(utterance.id)

        assert store.delete_pending(utterance.id) is False
        assert store.get(utterance.id).status is UtteranceStatus.DELIVERED
        assert store.get_message(utterance.id) is not None

    def test_delete_unknown_returns_false(self, store):
        assert store.delete_pending("nope") is False

    def test_clear_drops_everything(self, store):
        store.add("one")
        store.add("two")
        store.add_assistant_message("reply")

        assert store.clear() == 2
        assert store.counts().total == 0
        assert store.recent_messages() == []


class TestReads:
    def test_counts(self, store):
        a = store.add("a")
        store.add("b")
        c = store.add("c")
        store.mark_delivered(a.id)
        store.mark_delivered(c.id)
        store.mark_responded_all_delivered()
        store.add("d")
        store.mark_delivered(store.pending_oldest_first()[0].id)

        assert store.counts().to_dict() == {"total": 4, "pending": 1, "delivered": 1}

    def test_pending_sort_orders(self, store, at):
        store.add("B", at(1))
        store.add("C", at(2))
        store.add("A", at(0))

        assert [u.text for u in store.pending_oldest_first()] == ["A", "B", "C"]
        assert [u.text for u in store.pending_newest_first()] == ["C", "B", "A"]

    def test_recent_utterances_newest_first_with_limit(self, store, at):
        for i, text in enumerate(["a", "b", "c", "d"]):
            store.add(text, at(i))

        assert [u.text for u in store.recent_utterances(limit=2)] == ["d", "c"]

    def test_recent_messages_oldest_first_with_limit(self, store, at):
        store.add("first", at(0))
        store.add("second", at(1))
        store.add_assistant_message("reply")

        messages = store.recent_messages(limit=2)
        assert [m.text for m in messages] == ["second", "reply"]

    def test_has_pending_and_has_any(self, store):
        assert store.has_pending() is False
        assert store.has_any() is False

        utterance = store.add("hi")
        assert store.has_pending() is True

        store.mark_delivered(utterance.id)
        assert store.has_pending() is False
        assert store.has_any() is True


class TestDequeue:
    def test_dequeue_newest_first_then_reverse_reads_in_order(self, store, at):
        store.add("A", at(0))
        store.add("B", at(1))
        store.add("C", at(2))

        dequeued = store.dequeue_pending_newest_first()

        assert [u.text for u in dequeued] == ["C", "B", "A"]
        assert [u.text for u in reversed(dequeued)] == ["A", "B", "C"]
        assert store.counts().to_dict() == {"total": 3, "pending": 0, "delivered": 3}

    def test_dequeue_keeps_submission_order_for_equal_timestamps(self, store, at):
        store.add("first", at(0))
        store.add("second", at(0))

        dequeued = store.dequeue_pending_newest_first()
        assert [u.text for u in reversed(dequeued)] == ["first", "second"]

    def test_dequeue_skips_already_delivered(self, store):
        old = store.add("old")
        store.mark_delivered(old.id)
        store.add("new")

        dequeued = store.dequeue_pending_newest_first()
        assert [u.text for u in dequeued] == ["new"]

    def test_dequeue_empty_queue(self, store):
        assert store.dequeue_pending_newest_first() == []

    def test_dequeued_snapshot_shape(self, store, at):
        utterance = store.add("hello", at(0))
        (snapshot,) = store.dequeue_pending_newest_first()

        assert snapshot.to_dict() == {
            "id": utterance.id,
            "text": "hello",
            "timestamp": at(0).isoformat(),
        }

    def test_mirror_invariant_holds_after_mutations(self, store):
        a = store.add("a")
        b = store.add("b")
        store.add("c")
        store.mark_delivered(a.id)
        assert _statuses_match(store)

        store.mark_responded_all_delivered()
        assert _statuses_match(store)

        store.delete_pending(b.id)
        assert store.get_message(b.id) is None
        assert _statuses_match(store)

        store.dequeue_pending_newest_first()
        assert _statuses_match(store)
