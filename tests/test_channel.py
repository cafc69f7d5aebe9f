"""Tests for the outbound channel."""

from __future__ import annotations

import queue
import threading
import time

import pytest

from fieldtrack.channel import ChannelClosed, OutboundChannel


class TestOutboundChannel:
    def test_every_subscriber_gets_a_copy(self):
        ch = OutboundChannel()
        a, b = ch.subscribe(), ch.subscribe()
        assert ch.publish("x") == 2
        assert a.drain() == ["x"]
        assert b.drain() == ["x"]

    def test_predicate_filters(self):
        ch = OutboundChannel()
        evens = ch.subscribe(lambda n: n % 2 == 0)
        for n in range(6):
            ch.publish(n)
        assert evens.drain() == [0, 2, 4]

    def test_unsubscribed_gets_nothing_more(self):
        ch = OutboundChannel()
        sub = ch.subscribe()
        ch.publish(1)
        sub.close()
        assert ch.publish(2) == 0
        assert list(sub) == [1]
        assert sub.closed

    def test_close_ends_iteration_after_draining(self):
        ch = OutboundChannel()
        sub = ch.subscribe()
        ch.publish("a")
        ch.publish("b")
        ch.close()
        assert list(sub) == ["a", "b"]
        with pytest.raises(ChannelClosed):
            sub.get(timeout=0.1)

    def test_publish_after_close_raises(self):
        ch = OutboundChannel()
        ch.close()
        with pytest.raises(ChannelClosed):
            ch.publish("late")

    def test_subscribe_after_close_is_already_ended(self):
        ch = OutboundChannel()
        ch.close()
        sub = ch.subscribe()
        assert sub.closed
        assert list(sub) == []

    def test_full_queue_drops_new_records(self):
        ch = OutboundChannel()
        sub = ch.subscribe(maxsize=2)
        assert [ch.publish(n) for n in range(3)] == [1, 1, 0]
        assert sub.drain() == [0, 1]

    def test_get_times_out(self):
        sub = OutboundChannel().subscribe()
        with pytest.raises(queue.Empty):
            sub.get(timeout=0.01)

    def test_consumer_thread(self):
        ch = OutboundChannel()
        sub = ch.subscribe()
        received: list[int] = []
        t = threading.Thread(target=lambda: received.extend(sub))
        t.start()
        for n in range(100):
            ch.publish(n)
        ch.close()
        t.join(timeout=5)
        assert not t.is_alive()
        assert received == list(range(100))

    def test_close_on_full_queue_keeps_end_marker(self):
        ch = OutboundChannel()
        sub = ch.subscribe(maxsize=2)
        ch.publish(0)
        ch.publish(1)
        ch.close()
        # the end marker takes the oldest slot
        assert list(sub) == [1]
        assert sub.closed

    def test_unsubscribe_on_full_queue_does_not_raise(self):
        ch = OutboundChannel()
        sub = ch.subscribe(maxsize=1)
        ch.publish("x")
        sub.close()
        sub.close()
        with pytest.raises(ChannelClosed):
            sub.get(timeout=0.1)

    def test_accepted_records_all_arrive_before_close(self):
        ch = OutboundChannel()
        sub = ch.subscribe()
        accepted = [0] * 4
        received: list[tuple[int, int]] = []
        start = threading.Barrier(5)

        def publisher(no: int) -> None:
            start.wait()
            n = 0
            while True:
                try:
                    accepted[no] += ch.publish((no, n))
                except ChannelClosed:
                    return
                n += 1

        threads = [threading.Thread(target=publisher, args=(no,)) for no in range(4)]
        consumer = threading.Thread(target=lambda: received.extend(sub))
        for t in threads:
            t.start()
        consumer.start()
        start.wait()
        time.sleep(0.05)
        ch.close()
        for t in [*threads, consumer]:
            t.join(timeout=5)
            assert not t.is_alive()

        assert len(received) == sum(accepted)
        for no in range(4):
            mine = [n for p, n in received if p == no]
            assert mine == list(range(len(mine)))
