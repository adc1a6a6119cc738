"""Tests for the batch publisher."""

import io
import threading

from conftest import RecordingSender, full_event, make_event
from riemann_shipper.builder import RecordSettings
from riemann_shipper.codec import JSONCodec
from riemann_shipper.metrics import Metrics
from riemann_shipper.models import Batch, HostTarget
from riemann_shipper.publisher import BatchPublisher
from riemann_shipper.reader import parse_event
from riemann_shipper.sender import HostSender

HOST_A = HostTarget("riemann-a", 5555)
HOST_B = HostTarget("riemann-b", 5555)


def _publisher(hosts, sender, observer=None, **kwargs):
    return BatchPublisher(hosts, sender, observer or Metrics(), **kwargs)


class TestScenarios:
    def test_single_event_single_host(self, riemann_server):
        metrics = Metrics()
        publisher = _publisher((riemann_server.target,), HostSender(send_delay=0), metrics)
        batch = Batch([full_event(hostname="srv1", message="hi", username="bob")])

        outcome = publisher.publish(batch)

        assert (outcome.acked, outcome.dropped) == (1, 0)
        assert batch.ack_count == 1
        assert riemann_server.wait_for(1)
        assert len(riemann_server.received) == 1
        event = riemann_server.received[0]
        assert event.host == "srv1"
        assert event.description == "hi"
        assert list(event.tags) == ["bob"]
        assert metrics.snapshot() == {"batches": 1, "events": 1, "acked": 1, "dropped": 0}

    def test_missing_username_sends_empty_tag(self, riemann_server):
        publisher = _publisher((riemann_server.target,), HostSender(send_delay=0))
        event = make_event(host={"hostname": "srv1"}, message="hi")

        outcome = publisher.publish(Batch([event]))

        assert outcome.acked == 1
        assert riemann_server.wait_for(1)
        assert list(riemann_server.received[0].tags) == [""]

    def test_unreachable_host_drops_only_affected_event(self, riemann_server, unreachable_target):
        sender = RecordingSender(fail={("second", unreachable_target)})
        publisher = _publisher((riemann_server.target, unreachable_target), sender)
        batch = Batch([make_event(message="first"), make_event(message="second")])

        outcome = publisher.publish(batch)

        assert (outcome.acked, outcome.dropped) == (1, 1)
        assert batch.ack_count == 1

    def test_real_unreachable_host_counts_every_event_dropped(self, riemann_server, unreachable_target):
        publisher = _publisher(
            (riemann_server.target, unreachable_target), HostSender(send_delay=0), timeout=1.0,
        )
        outcome = publisher.publish(Batch([full_event(), full_event()]))

        assert (outcome.acked, outcome.dropped) == (0, 2)
        # The reachable host is still contacted for every event.
        assert riemann_server.wait_for(2)

    def test_empty_batch(self):
        metrics = Metrics()
        sender = RecordingSender()
        publisher = _publisher((HOST_A,), sender, metrics)
        batch = Batch([])

        outcome = publisher.publish(batch)

        assert (outcome.acked, outcome.dropped) == (0, 0)
        assert batch.ack_count == 1
        assert sender.calls == []
        assert metrics.snapshot()["batches"] == 1


class TestOrderingAndAccounting:
    def test_event_major_host_minor_order(self):
        sender = RecordingSender()
        hosts = (HOST_A, HOST_B, HostTarget("riemann-c", 5556))
        publisher = _publisher(hosts, sender)
        events = [make_event(message=f"e{i}") for i in range(4)]

        publisher.publish(Batch(events))

        assert len(sender.calls) == 4 * 3
        expected = [(host, f"e{i}") for i in range(4) for host in hosts]
        assert [(t, r.description) for t, r in sender.calls] == expected

    def test_counts_sum_to_batch_size(self):
        fail = {("e1", HOST_B), ("e3", HOST_A), ("e3", HOST_B)}
        sender = RecordingSender(fail=fail)
        metrics = Metrics()
        publisher = _publisher((HOST_A, HOST_B), sender, metrics)

        outcome = publisher.publish(Batch([make_event(message=f"e{i}") for i in range(5)]))

        assert outcome.dropped == 2
        assert outcome.acked == 3
        assert outcome.total == 5
        snap = metrics.snapshot()
        assert snap["acked"] + snap["dropped"] == snap["events"] == 5

    def test_no_retry_on_failure(self):
        sender = RecordingSender(fail={("e0", HOST_A)})
        publisher = _publisher((HOST_A,), sender)
        publisher.publish(Batch([make_event(message="e0")]))
        assert len(sender.calls) == 1

    def test_record_settings_applied(self):
        sender = RecordingSender()
        settings = RecordSettings(service="Linux", state="critical", metric=1)
        publisher = _publisher((HOST_A,), sender, settings=settings)
        publisher.publish(Batch([full_event()]))
        record = sender.calls[0][1]
        assert (record.service, record.state, record.metric) == ("Linux", "critical", 1)

    def test_cancel_drops_remaining_events(self):
        cancel = threading.Event()
        cancel.set()
        sender = RecordingSender()
        publisher = _publisher((HOST_A,), sender)
        batch = Batch([full_event(), full_event()])

        outcome = publisher.publish(batch, cancel=cancel)

        assert (outcome.acked, outcome.dropped) == (0, 2)
        assert batch.ack_count == 1

    def test_close_closes_sender(self):
        sender = RecordingSender()
        _publisher((HOST_A,), sender).close()
        assert sender.closed is True


class TestEchoOutput:
    def test_writes_encoded_events_and_flushes(self):
        out = io.BytesIO()
        publisher = _publisher(
            (HOST_A,), RecordingSender(), codec=JSONCodec(), out=out,
        )
        publisher.publish(Batch([make_event(message="<a&b>"), make_event(message="two")]))

        lines = out.getvalue().splitlines()
        assert len(lines) == 2
        assert b'"message":"<a&b>"' in lines[0]

    def test_no_echo_without_codec(self):
        out = io.BytesIO()
        publisher = _publisher((HOST_A,), RecordingSender(), out=out)
        publisher.publish(Batch([make_event(message="x")]))
        assert out.getvalue() == b""


class TestUnencodableValues:
    def test_lone_surrogate_still_ships(self, riemann_server):
        metrics = Metrics()
        publisher = _publisher((riemann_server.target,), HostSender(send_delay=0), metrics)
        event = parse_event('{"message": "bad \\ud800 text", "host": {"hostname": "srv1"}}')
        batch = Batch([event, full_event(message="fine")])

        outcome = publisher.publish(batch)

        assert (outcome.acked, outcome.dropped) == (2, 0)
        assert batch.ack_count == 1
        assert riemann_server.wait_for(2)
        assert riemann_server.received[0].description.startswith("bad ")
        assert riemann_server.received[1].description == "fine"

    def test_out_of_range_metric_drops_instead_of_raising(self, riemann_server):
        metrics = Metrics()
        publisher = _publisher(
            (riemann_server.target,), HostSender(send_delay=0), metrics,
            settings=RecordSettings(metric=2 ** 70),
        )
        batch = Batch([full_event(), full_event()])

        outcome = publisher.publish(batch)

        assert (outcome.acked, outcome.dropped) == (0, 2)
        assert batch.ack_count == 1
        assert metrics.snapshot() == {"batches": 1, "events": 2, "acked": 0, "dropped": 2}

    def test_echo_survives_lone_surrogate(self):
        out = io.BytesIO()
        publisher = _publisher((HOST_A,), RecordingSender(), codec=JSONCodec(), out=out)
        batch = Batch([make_event(x="\udc80"), make_event(message="two")])

        outcome = publisher.publish(batch)

        assert (outcome.acked, outcome.dropped) == (2, 0)
        lines = out.getvalue().splitlines()
        assert len(lines) == 2
        assert b"\\udc80" in lines[0]
