from ielts_prep.markup import (
    count_questions,
    extract_answer_key,
    field_name,
    render_exam,
    render_passage,
    split_blocks,
)


CHOICE_MD = "[!num] Capital of France?\n[*] Paris\n[ ] Rome"
MULTI_MD = "[!num] Pick two\n[*] A\n[ ] B\n[*] C"
DROPDOWN_MD = "[!num] The sky is [D]\n[*] blue\n[ ] red\n[/D] today."


def test_split_blocks_keeps_order():
    blocks = split_blocks("Intro line\n\n[!num] First [T]\nmore\n[!num] Second [T]")
    assert [b["type"] for b in blocks] == ["markdown", "question", "question"]
    assert blocks[0]["text"] == "Intro line\n"
    assert blocks[1]["lines"] == ["[!num] First [T]", "more"]
    assert blocks[2]["lines"] == ["[!num] Second [T]"]


def test_split_blocks_without_questions():
    blocks = split_blocks("Just a passage")
    assert blocks == [{"type": "markdown", "text": "Just a passage"}]
    assert split_blocks("") == [{"type": "markdown", "text": ""}]


def test_count_questions():
    assert count_questions("[!num] a\n[!num] b [!num] c") == 3
    assert count_questions(None) == 0


def test_field_name_falls_back_to_placeholder():
    assert field_name(7, 2) == "7_q2"
    assert field_name(0, 1) == "X_q1"
    assert field_name(None, 3) == "X_q3"


def test_text_answer_exam_mode_hides_answer():
    html = render_exam("[!num] The river is [T*Thames].", skill_id=3)
    assert '<span class="numberIndex">Q1.</span>' in html
    assert '<input type="text" class="inlineTextbox" name="3_q1" style="width:11ch;" />' in html
    assert "Thames" not in html


def test_text_answer_review_states():
    md = "[!num] The river is [T*Thames]."
    key = {"3_q1": "Thames"}

    right = render_exam(md, show_answers=True, user_answers={"3_q1": " thames "}, correct_answers=key, skill_id=3)
    assert 'value="Thames" readonly' in right
    assert "qa-right" in right

    wrong = render_exam(md, show_answers=True, user_answers={"3_q1": "Seine"}, correct_answers=key, skill_id=3)
    assert "qa-wrong" in wrong
    assert 'title="Your answer: Seine"' in wrong

    blank = render_exam(md, show_answers=True, user_answers={"3_q1": "_"}, correct_answers=key, skill_id=3)
    assert "qa-missing" in blank
    assert "Your answer: (blank)" in blank


def test_plain_text_input_disabled_in_review():
    html = render_exam("[!num] Notes: [T]", show_answers=True, skill_id=2)
    assert '<input type="text" class="inlineTextbox" name="2_q1" style="width:15ch;" disabled />' in html


def test_single_correct_choice_renders_radios():
    html = render_exam(CHOICE_MD, skill_id=5)
    assert '<label class="choiceItem"><input type="radio" name="5_q1" value="Paris" /> Paris</label>' in html
    assert '<label class="choiceItem"><input type="radio" name="5_q1" value="Rome" /> Rome</label>' in html
    assert "checked" not in html
    assert "checkbox" not in html


def test_multiple_correct_choices_render_checkboxes_with_limit():
    html = render_exam(MULTI_MD, skill_id=5)
    assert html.count('type="checkbox"') == 3
    assert 'data-limit="2" data-group="5_q1"' in html


def test_choice_review_highlights():
    html = render_exam(
        MULTI_MD,
        show_answers=True,
        user_answers=[{"SkillId": 5, "Answers": {"5_q1": ["A", "B"]}}],
        correct_answers=[{"SkillId": 5, "Answers": {"5_q1": ["A", "C"]}}],
        skill_id=5,
    )
    assert (
        '<label class="choiceItem qa-right"><input type="checkbox" name="5_q1" value="A" '
        'data-limit="2" data-group="5_q1" checked disabled /> A</label>'
    ) in html
    assert (
        '<label class="choiceItem qa-wrong"><input type="checkbox" name="5_q1" value="B" '
        'data-limit="2" data-group="5_q1" disabled /> B</label>'
    ) in html
    assert 'value="C" data-limit="2" data-group="5_q1" checked disabled' in html


def test_choice_review_missing_answer():
    html = render_exam(CHOICE_MD, show_answers=True, user_answers={}, correct_answers={"5_q1": "Paris"}, skill_id=5)
    assert html.count("choiceItem qa-missing") == 2


def test_dropdown_exam_mode():
    html = render_exam(DROPDOWN_MD, skill_id=4)
    assert '<select name="4_q1" class="dropdownInline" style="width:9ch">' in html
    assert '<option value="" disabled selected hidden></option>' in html
    assert '<option value="blue">blue</option>' in html
    assert '<option value="red">red</option>' in html
    assert "today." in html


def test_dropdown_review_marks_selection():
    html = render_exam(
        DROPDOWN_MD, show_answers=True, user_answers={"4_q1": "Blue"}, correct_answers={"4_q1": "blue"}, skill_id=4
    )
    assert 'class="dropdownInline qa-right" style="width:9ch" disabled>' in html
    assert '<option value="" disabled hidden></option>' in html
    assert '<option value="blue" selected>blue</option>' in html

    wrong = render_exam(DROPDOWN_MD, show_answers=True, user_answers={"4_q1": "red"}, skill_id=4)
    assert "dropdownInline qa-wrong" in wrong


def test_explanations_only_in_review():
    md = CHOICE_MD + "\n[H*1]Paris is the *capital*.[/H]"
    exam = render_exam(md, skill_id=5)
    assert "explainBlock" not in exam
    assert "is the" not in exam
    assert "@@" not in exam

    review = render_exam(md, show_answers=True, skill_id=5)
    assert '<details class="explainBlock" data-hid="1">' in review
    assert "Explanation #1" in review
    assert "<em>capital</em>" in review


def test_questions_are_numbered_in_order():
    html = render_exam("Read the text.\n[!num] one [T]\n[!num] two [T]", skill_id=1)
    assert html.index("Q1.") < html.index("Q2.")
    assert 'name="1_q2"' in html
    assert "Read the text." in html


def test_render_passage_strips_explanation_tags():
    html = render_passage("The **river** [H*2]flows east[/H] slowly.")
    assert "<strong>river</strong>" in html
    assert "flows east" in html
    assert "[H" not in html
    assert "[/H]" not in html


def test_extract_answer_key():
    md = "\n".join(
        [
            "Intro text",
            "[!num] Name the river [T*Thames]",
            "[!num] Colour [D]",
            "[*] Blue",
            "[ ] Red",
            "[/D]",
            "[!num] Pick two",
            "[*] A",
            "[ ] B",
            "[*] C",
            "[!num] Free [T]",
        ]
    )
    preview, answers = extract_answer_key(md, 9)
    assert answers == {"9_q1": "Thames", "9_q2": "Blue", "9_q3": ["A", "C"], "9_q4": "_"}
    assert 'name="9_q1"' in preview
    assert "Thames" not in preview


def test_extract_answer_key_orders_text_then_dropdown_then_choices():
    md = "[!num] [T*one] [D]\n[*] two\n[ ] nope\n[/D]\n[*] three"
    _preview, answers = extract_answer_key(md)
    assert answers == {"X_q1": ["one", "two", "three"]}


def test_author_values_are_escaped():
    html = render_exam("[!num] Pick\n[*] <b>x</b> & y\n[ ] plain", skill_id=1)
    assert 'value="&lt;b&gt;x&lt;/b&gt; &amp; y"' in html
    assert "<b>x</b>" not in html

    review = render_exam('[!num] Quote [T*a"b]', show_answers=True, user_answers={"1_q1": "ab"}, skill_id=1)
    assert 'value="a&quot;b" readonly' in review


def test_user_answer_is_escaped_in_review_title():
    html = render_exam("[!num] River [T*Thames]", show_answers=True, user_answers={"1_q1": '"><i>'}, skill_id=1)
    assert 'title="Your answer: &quot;&gt;&lt;i&gt;"' in html
    assert "<i>" not in html
    assert "qa-wrong" in html


def test_unclosed_dropdown_stays_literal():
    html = render_exam("[!num] Pick [D]\n[*] blue\n[ ] red", skill_id=1)
    assert "[D]" in html
    assert "<select" not in html
    assert html.count('type="radio"') == 2


def test_unclosed_explanation_stays_literal():
    md = "[!num] Notes [T]\n[H*1]hint without end"
    html = render_exam(md, skill_id=1)
    assert "[H" in html
    assert "hint without end" in html
    assert "explainBlock" not in render_exam(md, show_answers=True, skill_id=1)


def test_stray_dropdown_close_stays_literal():
    md = "[!num] Colour [/D] [T*red]"
    html = render_exam(md, skill_id=1)
    assert "[/D]" in html
    _preview, answers = extract_answer_key(md, 1)
    assert answers == {"1_q1": "red"}


def test_crlf_line_endings():
    md = "Intro\r\n[!num] one [T*x]\r\nmore\r\n[!num] two [T*y]"
    blocks = split_blocks(md)
    assert [b["type"] for b in blocks] == ["markdown", "question", "question"]
    assert blocks[1]["lines"] == ["[!num] one [T*x]", "more"]
    assert all("\r" not in line for b in blocks if b["type"] == "question" for line in b["lines"])
    _preview, answers = extract_answer_key(md, 2)
    assert answers == {"2_q1": "x", "2_q2": "y"}
