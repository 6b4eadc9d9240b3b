from models import OperationType
from services.sync_queue import MAX_ERROR_LENGTH

from conftest import ALARM


def test_fifo_order(queue):
    first = queue.enqueue(OperationType.CREATE, "t-1", {"name": "a"})
    second = queue.enqueue(OperationType.UPDATE, "t-1", {"name": "b"}, previous_version=1)
    third = queue.enqueue(OperationType.DELETE, "t-2")

    assert [op.id for op in queue.get_all()] == [first.id, second.id, third.id]
    assert queue.peek().id == first.id
    assert queue.dequeue().id == first.id
    assert queue.peek().id == second.id
    assert queue.get_size() == 2


def test_peek_on_empty_queue(queue):
    assert queue.peek() is None
    assert queue.dequeue() is None
    assert queue.get_size() == 0


def test_payload_is_decoded(queue):
    op = queue.enqueue(OperationType.UPDATE, "t-1", {"alarm_time": ALARM, "finished": True}, previous_version=4)

    head = queue.peek()
    assert head.id == op.id
    assert head.type is OperationType.UPDATE
    assert head.payload == {"alarm_time": ALARM, "finished": True}
    assert head.previous_version == 4
    assert head.retry_count == 0


def test_mark_error_counts_retries_and_truncates(queue):
    op = queue.enqueue(OperationType.CREATE, "t-1")

    queue.mark_error(op.id, "x" * (MAX_ERROR_LENGTH + 50))
    queue.retry(op.id)

    head = queue.peek()
    assert head.retry_count == 2
    assert len(head.last_error) == MAX_ERROR_LENGTH


def test_operations_on_removed_ids_are_ignored(queue):
    op = queue.enqueue(OperationType.CREATE, "t-1")
    queue.remove(op.id)

    queue.remove(op.id)
    queue.retry(op.id)
    queue.mark_error(op.id, "late")

    assert queue.get_size() == 0


def test_ids_keep_growing_after_removal(queue):
    first = queue.enqueue(OperationType.CREATE, "t-1")
    queue.remove(first.id)

    second = queue.enqueue(OperationType.CREATE, "t-2")

    assert second.id > first.id


def test_has_pending_filters(queue):
    create = queue.enqueue(OperationType.CREATE, "t-1")
    queue.enqueue(OperationType.UPDATE, "t-1", previous_version=1)

    assert queue.has_pending("t-1")
    assert queue.has_pending("t-1", OperationType.UPDATE)
    assert not queue.has_pending("t-1", OperationType.DELETE)
    assert queue.has_pending("t-1", after_id=create.id)
    assert not queue.has_pending("t-2")
    assert [op.type for op in queue.get_for_task("t-1")] == [OperationType.CREATE, OperationType.UPDATE]


def test_clear(queue):
    queue.enqueue(OperationType.CREATE, "t-1")
    queue.enqueue(OperationType.DELETE, "t-2")

    queue.clear()

    assert queue.get_size() == 0
