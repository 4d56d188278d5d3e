from polkapay.streams import Subscription, open_subscription

from conftest import StubStream


def test_unsubscribe_is_idempotent_and_releases_once() -> None:
    released: list[int] = []
    subscription = Subscription("test")
    subscription.bind(lambda: released.append(1))

    subscription.unsubscribe()
    subscription()

    assert released == [1]
    assert subscription.active is False


def test_bind_after_unsubscribe_releases_immediately() -> None:
    released: list[int] = []
    subscription = Subscription("late")
    subscription.unsubscribe()

    subscription.bind(lambda: released.append(1))

    assert released == [1]


def test_deliver_counts_and_survives_callback_errors() -> None:
    subscription = Subscription("noisy")

    def explode(value: int) -> None:
        raise RuntimeError("subscriber bug")

    assert subscription.deliver(explode, 1) is True
    assert subscription.deliver(lambda value: None, 2) is True
    subscription.unsubscribe()
    assert subscription.deliver(lambda value: None, 3) is False
    assert subscription.delivered == 2


def test_open_subscription_transforms_values() -> None:
    stream = StubStream()
    seen: list[str] = []

    with open_subscription("upper", stream, seen.append, transform=str.upper):
        stream.emit("a")
        stream.emit("b")
    stream.emit("c")

    assert seen == ["A", "B"]
    assert stream.released == 1


def test_open_subscription_routes_stream_errors() -> None:
    stream = StubStream()
    errors: list[BaseException] = []

    subscription = open_subscription(
        "failing", stream, lambda value: None, transform=lambda raw: raw, on_error=errors.append
    )
    stream.fail(ConnectionResetError("closed"))
    subscription.unsubscribe()
    stream.fail(ConnectionResetError("late"))

    assert [str(exc) for exc in errors] == ["closed"]


def test_undecodable_updates_go_to_on_error() -> None:
    stream = StubStream()
    seen: list[int] = []
    errors: list[BaseException] = []

    subscription = open_subscription("ints", stream, seen.append, transform=int, on_error=errors.append)
    stream.emit("1")
    stream.emit("not a number")
    stream.emit("2")

    assert seen == [1, 2]
    assert len(errors) == 1
    assert isinstance(errors[0], ValueError)
    assert subscription.active is True
