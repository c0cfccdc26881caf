import gc
import pytest
from enum import Enum, auto
from saveload.core.events import EventBus, Event, ReferenceEvent

class MockEvent(Enum):
    TEST_EVENT = auto()
    OTHER_EVENT = auto()

def test_handlers_receive_event_data(event_bus):
    requested = []
    event_bus.subscribe(ReferenceEvent.REFERENCE_REQUESTED, requested.append)

    event = event_bus.publish(ReferenceEvent.REFERENCE_REQUESTED, reference_id="7")

    assert requested == [event]
    assert event.type is ReferenceEvent.REFERENCE_REQUESTED
    assert event["reference_id"] == "7"

def test_other_event_types_are_not_delivered(event_bus):
    allocated = []
    event_bus.subscribe(ReferenceEvent.ID_ALLOCATED, allocated.append)

    event_bus.publish(ReferenceEvent.REFERENCE_REQUESTED, reference_id="7")
    assert allocated == []

def test_unsubscribed_handler_is_not_called(event_bus):
    allocated = []
    event_bus.subscribe(ReferenceEvent.ID_ALLOCATED, allocated.append)
    event_bus.unsubscribe(ReferenceEvent.ID_ALLOCATED, allocated.append)

    event_bus.publish(ReferenceEvent.ID_ALLOCATED, reference_id="0")

    assert allocated == []
    assert not event_bus.has_subscribers(ReferenceEvent.ID_ALLOCATED)

def test_priority_then_subscription_order(event_bus):
    order = []
    event_bus.subscribe(MockEvent.TEST_EVENT, lambda e: order.append("first default"))
    event_bus.subscribe(MockEvent.TEST_EVENT, lambda e: order.append("urgent"), priority=10)
    event_bus.subscribe(MockEvent.TEST_EVENT, lambda e: order.append("second default"))
    event_bus.subscribe(MockEvent.TEST_EVENT, lambda e: order.append("late"), priority=-1)

    event_bus.publish(MockEvent.TEST_EVENT)

    assert order == ["urgent", "first default", "second default", "late"]

def test_events_published_while_handling_are_queued(event_bus):
    order = []

    def on_first(event):
        order.append(f"start {event['name']}")
        if event["name"] == "a":
            event_bus.publish(ReferenceEvent.REFERENCE_REQUESTED, name="b")
            event_bus.publish(ReferenceEvent.REFERENCE_REQUESTED, name="c")
        order.append(f"end {event['name']}")

    event_bus.subscribe(ReferenceEvent.REFERENCE_REQUESTED, on_first)
    event_bus.publish(ReferenceEvent.REFERENCE_REQUESTED, name="a")

    # No nesting: each handler finishes before the next event starts
    assert order == ["start a", "end a", "start b", "end b", "start c", "end c"]
    assert not event_bus.is_publishing

def test_handler_error_propagates_and_drops_queue(event_bus):
    received = []

    def handler(event):
        received.append(event["n"])
        if event["n"] == 0:
            event_bus.publish(MockEvent.TEST_EVENT, n=1)
            raise RuntimeError("boom")

    event_bus.subscribe(MockEvent.TEST_EVENT, handler)

    with pytest.raises(RuntimeError):
        event_bus.publish(MockEvent.TEST_EVENT, n=0)

    assert received == [0]
    assert not event_bus.is_publishing

    # The bus is usable again afterwards
    event_bus.publish(MockEvent.TEST_EVENT, n=2)
    assert received == [0, 2]

def test_clear(event_bus):
    received = []
    event_bus.subscribe(MockEvent.TEST_EVENT, lambda e: received.append(e))
    event_bus.subscribe(MockEvent.OTHER_EVENT, lambda e: received.append(e))

    event_bus.clear(MockEvent.TEST_EVENT)
    event_bus.publish(MockEvent.TEST_EVENT)
    event_bus.publish(MockEvent.OTHER_EVENT)
    assert len(received) == 1

    event_bus.clear()
    event_bus.publish(MockEvent.OTHER_EVENT)
    assert len(received) == 1

def test_event_get_default():
    event = Event(type=MockEvent.TEST_EVENT, data={"a": 1})
    assert event.get("a") == 1
    assert event.get("missing", "x") == "x"

def test_unreferenced_closures_keep_receiving(event_bus):
    received = []

    def listen():
        event_bus.subscribe(MockEvent.TEST_EVENT, lambda e: received.append(e["n"]))

    listen()
    gc.collect()
    event_bus.publish(MockEvent.TEST_EVENT, n=1)

    assert received == [1]
