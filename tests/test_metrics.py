from nodeproblem.metrics import Aggregation, Int64Metric, MetricRepresentation


def test_sum_accumulates():
    metric = Int64Metric("problem_counter", Aggregation.SUM, ["reason"])
    metric.record({"reason": "foo"}, 1)
    metric.record({"reason": "foo"}, 1)
    assert metric.list_metrics() == [MetricRepresentation("problem_counter", {"reason": "foo"}, 2)]


def test_last_value_overwrites():
    metric = Int64Metric("problem_gauge", Aggregation.LAST_VALUE, ["type", "reason"])
    metric.record({"type": "A", "reason": "foo"}, 1)
    metric.record({"type": "A", "reason": "foo"}, 0)
    assert metric.list_metrics() == [
        MetricRepresentation("problem_gauge", {"type": "A", "reason": "foo"}, 0)
    ]


def test_distinct_series():
    metric = Int64Metric("problem_counter", Aggregation.SUM, ["reason"])
    metric.record({"reason": "foo"}, 1)
    metric.record({"reason": "bar"}, 0)
    got = {m.labels["reason"]: m.value for m in metric.list_metrics()}
    assert got == {"foo": 1, "bar": 0}


def test_extra_labels_are_dropped():
    metric = Int64Metric("problem_counter", Aggregation.SUM, ["reason"])
    metric.record({"reason": "foo", "other": "x"}, 1)
    assert metric.list_metrics()[0].labels == {"reason": "foo"}


def test_missing_labels_are_empty():
    metric = Int64Metric("problem_gauge", Aggregation.LAST_VALUE, ["type", "reason"])
    metric.record({"type": "A"}, 1)
    assert metric.list_metrics()[0].labels == {"type": "A", "reason": ""}


def test_list_metrics_is_a_snapshot():
    metric = Int64Metric("problem_counter", Aggregation.SUM, ["reason"])
    metric.record({"reason": "foo"}, 1)
    snapshot = metric.list_metrics()
    snapshot[0].labels["reason"] = "changed"
    snapshot[0].value = 100
    assert metric.list_metrics() == [MetricRepresentation("problem_counter", {"reason": "foo"}, 1)]


def test_empty_metric_lists_nothing():
    assert Int64Metric("problem_counter", Aggregation.SUM, ["reason"]).list_metrics() == []