"""Tests for strict output constraints."""

from nova.llm.constraints import count_sentences, parse_output_constraints, validate_output


def test_no_constraints():
    constraints = parse_output_constraints("tell me about the moon")
    assert constraints.enabled is False
    assert validate_output("anything", constraints) == (True, "")


def test_one_word():
    constraints = parse_output_constraints("Answer with one word: is water wet?")
    assert constraints.one_word is True
    assert validate_output("Yes.", constraints) == (True, "")
    assert validate_output("Yes it is", constraints) == (False, "one_word_mismatch")


def test_exact_bullets():
    constraints = parse_output_constraints("Give me exactly 3 bullet points about tea")
    assert constraints.exact_bullet_count == 3
    assert validate_output("- a\n- b\n- c", constraints)[0] is True
    assert validate_output("- a\n- b", constraints) == (False, "exact_bullet_count_mismatch:3")
    assert validate_output("Intro\n- a\n- b\n- c", constraints) == (
        False,
        "bullet_contains_non_bullet_lines",
    )


def test_json_only_with_keys():
    constraints = parse_output_constraints("Return JSON only with keys name and age.")
    assert constraints.json_only is True
    assert constraints.required_json_keys == ("name", "age")
    assert validate_output('{"name": "A", "age": 3}', constraints) == (True, "")
    assert validate_output('{"name": "A"}', constraints) == (False, "json_missing_key:age")
    assert validate_output('{"name": "A", "age": 3, "x": 1}', constraints) == (False, "json_extra_key:x")
    assert validate_output("```json\n{}\n```", constraints) == (False, "json_only_markdown_fence")
    assert validate_output("not json", constraints) == (False, "json_only_invalid_json")


def test_sentence_counts():
    constraints = parse_output_constraints("Explain it in exactly two sentences.")
    assert constraints.sentence_count == 2
    assert validate_output("First one. Second one.", constraints) == (True, "")
    assert validate_output("Only one.", constraints) == (False, "sentence_count_mismatch:2")


def test_instructions_join_rules():
    constraints = parse_output_constraints("answer in one word, json only")
    assert "Return exactly one word with no extra words." in constraints.instructions
    assert "Return raw JSON only" in constraints.instructions


def test_count_sentences():
    assert count_sentences("") == 0
    assert count_sentences("no terminator") == 1
    assert count_sentences("One. Two! Three?") == 3
