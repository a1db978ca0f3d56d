from formdesk.utils.schema import normalize_questions, unwrap_answers, validate_answers

QUESTIONS, _ = normalize_questions(
    [
        {"id": "name", "title": "Name", "type": "short_answer", "required": True},
        {"id": "bio", "title": "Bio", "type": "paragraph"},
        {"id": "color", "title": "Colour", "type": "dropdown", "options": ["Red", "Blue"], "required": True},
        {"id": "pets", "title": "Pets", "type": "checkboxes", "options": ["Cat", "Dog", "Fish"]},
        {"id": "day", "title": "Day", "type": "date"},
        {"id": "at", "title": "At", "type": "time"},
        {
            "id": "mail",
            "title": "Email",
            "type": "short_answer",
            "validationRules": [{"type": "email", "message": "Bad email"}],
        },
    ]
)

VALID = {"name": "Ada", "color": "Red"}


def test_normalize_generates_missing_ids_and_keeps_given_ones():
    questions, errors = normalize_questions(
        [{"title": "A", "type": "short_answer"}, {"id": "keep", "title": "B", "type": "paragraph"}]
    )
    assert errors == []
    assert len(questions[0]["id"]) == 32
    assert questions[1]["id"] == "keep"
    assert questions[0]["options"] == []


def test_choice_question_needs_two_options():
    _, errors = normalize_questions([{"id": "q", "title": "Pick", "type": "multiple_choice", "options": ["Only"]}])
    assert errors == ['Question "Pick" needs at least 2 options.']


def test_normalize_reports_every_problem():
    _, errors = normalize_questions(
        [
            {"id": "a", "title": "", "type": "short_answer"},
            {"id": "a", "title": "Dup", "type": "paragraph"},
            {"id": "b", "title": "Odd", "type": "slider"},
            {"id": "c", "title": "Opts", "type": "dropdown", "options": ["x", "x"]},
            {"id": "d", "title": "Re", "type": "short_answer", "validationRules": [{"type": "regex", "value": "("}]},
        ]
    )
    assert len(errors) == 5


def test_short_answer_length_boundary():
    assert validate_answers(QUESTIONS, {**VALID, "name": "x" * 255}) == []
    errors = validate_answers(QUESTIONS, {**VALID, "name": "x" * 256})
    assert errors == ['Answer for "Name" is too long (max 255 chars)']


def test_paragraph_is_not_length_capped():
    assert validate_answers(QUESTIONS, {**VALID, "bio": "x" * 5000}) == []


def test_all_violations_are_collected():
    errors = validate_answers(
        QUESTIONS,
        {"name": "x" * 300, "color": "Green", "pets": ["Cat", "Cow"], "day": "18/10/2026", "ghost": 1},
    )
    assert len(errors) == 5
    assert 'Unknown question id "ghost".' in errors


def test_required_missing():
    errors = validate_answers(QUESTIONS, {"name": "", "color": None})
    assert errors == ['Answer for "Name" is required.', 'Answer for "Colour" is required.']


def test_type_shapes():
    ok = {**VALID, "pets": ["Cat", "Dog"], "day": "2026-10-18", "at": "09:30", "mail": "a@b.co"}
    assert validate_answers(QUESTIONS, ok) == []
    assert validate_answers(QUESTIONS, {**VALID, "at": "09:30:15"}) == []
    assert validate_answers(QUESTIONS, {**VALID, "pets": "Cat"}) == ['Answer for "Pets" must be a list of options.']
    assert validate_answers(QUESTIONS, {**VALID, "name": 12}) == ['Answer for "Name" must be text.']
    assert validate_answers(QUESTIONS, {**VALID, "at": "25:00"}) == ['Answer for "At" must be a time in HH:MM format.']


def test_validation_rule_message_is_used():
    assert validate_answers(QUESTIONS, {**VALID, "mail": "not-an-email"}) == ["Bad email"]


def test_answers_must_be_a_mapping():
    assert validate_answers(QUESTIONS, ["Ada"]) == ["Answers must be an object keyed by question id."]


def test_unwrap_nested_answers():
    assert unwrap_answers({"answers": {"name": "Ada"}}) == {"name": "Ada"}
    assert unwrap_answers({"name": "Ada"}) == {"name": "Ada"}
