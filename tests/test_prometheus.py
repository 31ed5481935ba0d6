from async_whatsapp_queue.models import QueueStats
from async_whatsapp_queue.prometheus import QueueMetrics


def test_queue_metrics_counters_and_gauge():
    metrics = QueueMetrics()

    metrics.inc_sent("text")
    metrics.inc_sent("media")
    metrics.inc_failed("")
    metrics.inc_retried("text")
    metrics.inc_cancelled()
    metrics.set_stats(QueueStats(pending=3, sending=1, sent=2, failed=1, total=8))

    output = metrics.generate_latest()
    assert b'waq_sent_total{kind="media"} 1.0' in output
    assert b'waq_failed_total{kind="text"} 1.0' in output
    assert b'waq_retried_total{kind="text"} 1.0' in output
    assert b"waq_cancelled_total 1.0" in output
    assert b'waq_messages{status="pending"} 3.0' in output
    assert b'waq_messages{status="total"} 8.0' in output


def test_each_collector_has_its_own_registry():
    first = QueueMetrics()
    second = QueueMetrics()
    first.inc_cancelled()
    assert b"waq_cancelled_total 0.0" in second.generate_latest()
