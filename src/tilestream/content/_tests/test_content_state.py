from __future__ import annotations

from tilestream.content.state import Content, ContentLoadState, FailureKind


def test_happy_path_transitions() -> None:
    content = Content("a.glb")
    ticket = content.begin_load()
    assert ticket is not None
    assert content.state is ContentLoadState.DOWNLOADING
    assert content.bytes_received(ticket)
    assert content.state is ContentLoadState.PARSING
    assert content.publish(ticket, "scene", (1.0, 2.0, 3.0))
    assert content.is_loaded
    assert content.handle == "scene"
    assert content.rtc_center == (1.0, 2.0, 3.0)


def test_begin_load_is_noop_unless_idle() -> None:
    content = Content("a.glb")
    ticket = content.begin_load()
    assert content.begin_load() is None
    content.bytes_received(ticket)
    assert content.begin_load() is None
    assert content.generation == ticket


def test_out_of_order_transitions_are_rejected() -> None:
    content = Content("a.glb")
    ticket = content.begin_load()
    assert not content.publish(ticket, "scene", None)
    assert content.state is ContentLoadState.DOWNLOADING


def test_stale_ticket_is_rejected() -> None:
    content = Content("a.glb")
    ticket = content.begin_load()
    assert not content.bytes_received(ticket + 1)
    assert content.state is ContentLoadState.DOWNLOADING


def test_failure_returns_to_notloading() -> None:
    content = Content("a.glb")
    ticket = content.begin_load()
    assert content.fail(ticket, FailureKind.TRANSPORT)
    assert content.state is ContentLoadState.NOTLOADING
    assert content.failure is FailureKind.TRANSPORT
    # a second failure report for the same load is ignored
    assert not content.fail(ticket, FailureKind.DECODE)


def test_dispose_while_parsing_blocks_publish() -> None:
    content = Content("a.glb")
    ticket = content.begin_load()
    content.bytes_received(ticket)
    token = content.token

    assert content.dispose() is None
    assert token.cancelled
    assert content.disposed
    assert content.state is ContentLoadState.NOTLOADING
    assert not content.publish(ticket, "late", None)
    assert content.handle is None
    assert content.begin_load() is None


def test_dispose_returns_published_handle() -> None:
    content = Content("a.glb")
    ticket = content.begin_load()
    content.bytes_received(ticket)
    content.publish(ticket, "scene", None)
    assert content.dispose() == "scene"
    assert content.handle is None and not content.is_loaded
