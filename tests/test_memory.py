from agent.core.memory import (
    ELLIPSIS,
    Memory,
    estimate_tokens,
    extract_keywords,
    format_context,
    score_memory,
    select_memories,
)


def mem(id, text, topics=(), **kwargs):
    return Memory(id=id, text=text, topics=list(topics), **kwargs)


def test_keywords_drop_short_words():
    assert extract_keywords("How do I cook Pasta al dente?") == {"cook", "pasta", "dente"}


def test_topic_match_outweighs_text_match():
    keywords = extract_keywords("python tips")
    by_topic = mem("1", "Likes snakes", ["python"])
    by_text = mem("2", "Writes python daily", ["work"])
    assert score_memory(by_topic, keywords) == 3
    assert score_memory(by_text, keywords) == 1


def test_no_overlap_returns_empty_selection():
    memories = [mem("1", "Lives in Lisbon", ["travel"]), mem("2", "Has a cat", ["pets"])]
    selection = select_memories("Explain recursion", memories, budget=100)
    assert selection.memories == []
    assert selection.used_topics == []


def test_order_is_non_increasing_with_ties_in_input_order():
    memories = [
        mem("a", "Prefers tabs for python code", ["editor"]),
        mem("b", "Learning python async", ["python"]),
        mem("c", "Maintains a python library", ["oss"]),
        mem("d", "Teaches python and django", ["python", "django"]),
    ]
    selection = select_memories("python django question", memories, budget=1000)
    assert selection.scores == sorted(selection.scores, reverse=True)
    assert [m.id for m in selection.memories] == ["d", "b", "a", "c"]


def test_budget_is_never_exceeded_and_last_memory_is_truncated():
    memories = [
        mem("1", "python " * 20, ["python"]),
        mem("2", "python " * 40, ["python"]),
    ]
    budget = estimate_tokens(memories[0].text) + 10
    selection = select_memories("python", memories, budget=budget)
    assert selection.total_tokens <= budget
    assert len(selection.memories) == 2
    assert selection.memories[1].text.endswith(ELLIPSIS)
    assert memories[1].text.endswith(" ")


def test_budget_respected_with_declared_token_counts():
    memories = [mem(str(i), f"python fact {i}", ["python"], tokenCount=40) for i in range(10)]
    selection = select_memories("python", memories, budget=100)
    assert selection.total_tokens <= 100
    assert [m.id for m in selection.memories][:2] == ["0", "1"]


def test_zero_budget_selects_nothing():
    selection = select_memories("python", [mem("1", "python", ["python"])], budget=0)
    assert selection.memories == []


def test_used_topics_are_deduplicated_in_order():
    memories = [
        mem("1", "Uses python at work", ["python", "work"]),
        mem("2", "Python hobby projects", ["python", "hobby"]),
    ]
    selection = select_memories("python", memories, budget=1000)
    assert selection.used_topics == ["python", "work", "hobby"]


def test_ranked_topics_boost_score():
    memories = [
        mem("1", "Likes python", ["coding"]),
        mem("2", "Reads python books", ["books"]),
    ]
    selection = select_memories("python", memories, budget=1000, ranked_topics=["Books"])
    assert [m.id for m in selection.memories] == ["2", "1"]


def test_recency_bonus_prefers_recent_memories():
    now = 1_700_000_000_000
    memories = [
        mem("old", "python notes", ["misc"], lastAccessed=now - 30 * 86_400_000),
        mem("new", "python notes", ["misc"], lastAccessed=now - 1000),
    ]
    selection = select_memories("python", memories, budget=1000, recency_bonus=True, now_ms=now)
    assert [m.id for m in selection.memories] == ["new", "old"]


def test_grouped_strategy_ranks_groups_by_aggregate_score():
    memories = [
        mem("1", "Plays guitar", ["music", "guitar"]),
        mem("2", "Cooks pasta often", ["cooking", "pasta"]),
        mem("3", "Bakes pasta dishes", ["cooking"]),
    ]
    selection = select_memories(
        "guitar or pasta", memories, budget=1000, strategy="grouped"
    )
    assert [m.id for m in selection.memories] == ["2", "3", "1"]


def test_numeric_ids_are_accepted():
    memory = Memory.model_validate({"id": 1712345678901, "text": "x", "topics": []})
    assert memory.id == "1712345678901"


def test_format_context_lists_memories():
    assert format_context([mem("1", "A"), mem("2", "B")]) == "- A\n- B"


def test_negative_declared_token_count_cannot_stretch_the_budget():
    memories = [
        mem("1", "python " * 150, ["python"], tokenCount=-100),
        mem("2", "python " * 30, ["python"], tokenCount=50),
    ]
    selection = select_memories("python", memories, budget=10)
    assert selection.total_tokens <= 10
    assert [m.id for m in selection.memories] == ["1"]
    assert selection.memories[0].text.endswith(ELLIPSIS)


def test_declared_count_below_text_size_uses_estimate():
    memory = mem("1", "a" * 400, tokenCount=0)
    assert memory.tokens == 100


def test_grouped_strategy_respects_budget_and_truncates_last():
    memories = [
        mem("1", "guitar " * 10, ["music"]),
        mem("2", "pasta " * 10, ["cooking"]),
        mem("3", "pasta " * 40, ["cooking"]),
    ]
    budget = estimate_tokens(memories[1].text) + 5
    selection = select_memories("guitar pasta", memories, budget=budget, strategy="grouped")
    assert selection.total_tokens <= budget
    assert [m.id for m in selection.memories] == ["2", "3"]
    assert selection.memories[-1].text.endswith(ELLIPSIS)
    assert selection.used_topics == ["cooking"]
