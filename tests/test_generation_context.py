from services.generation_context import GenerationContext


def test_empty_context():
    context = GenerationContext.empty()
    assert context.generated_ids == frozenset()
    assert context.last_batch_index == -1


def test_advance_returns_new_context():
    first = GenerationContext.empty()
    second = first.advance(0, ["q_a", "q_b"])
    third = second.advance(1, ["q_c"])

    assert first.last_batch_index == -1
    assert first.generated_ids == frozenset()
    assert second.generated_ids == {"q_a", "q_b"}
    assert third.generated_ids == {"q_a", "q_b", "q_c"}
    assert third.last_batch_index == 1
    assert third.contains("q_a")
    assert not second.contains("q_c")


def test_dict_round_trip_and_camel_case_rows():
    context = GenerationContext.empty().advance(0, ["q_b", "q_a"])
    assert context.to_dict() == {"generated_ids": ["q_a", "q_b"], "last_batch_index": 0}
    assert GenerationContext.from_dict(context.to_dict()) == context

    legacy = GenerationContext.from_dict({"generatedIds": ["x"], "lastBatchIndex": 3})
    assert legacy.generated_ids == {"x"}
    assert legacy.last_batch_index == 3

    assert GenerationContext.from_dict(None) == GenerationContext.empty()
