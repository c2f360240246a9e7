from engines.step_extraction import extract_steps


def test_step_prefixed_lines():
    text = (
        "Here is how to approach it.\n"
        "Step 1: Understand the problem\n"
        "Read the statement twice.\n"
        "Step 2: Plan\n"
        "List the options.\n"
        "Compare them.\n"
    )
    steps = extract_steps(text)
    assert steps == [
        {"title": "Understand the problem", "content": "Read the statement twice."},
        {"title": "Plan", "content": "List the options.\nCompare them."},
    ]


def test_numbered_list_with_inline_titles():
    steps = extract_steps("1. Define: figure out what matters\n2) Explore - list options")
    assert steps == [
        {"title": "Define", "content": "figure out what matters"},
        {"title": "Explore", "content": "list options"},
    ]


def test_markdown_and_bold_headings():
    text = "## Frame the question\nWhat is being asked?\n**Check assumptions**\nWhich facts are given?"
    steps = extract_steps(text)
    assert [step["title"] for step in steps] == ["Frame the question", "Check assumptions"]
    assert steps[1]["content"] == "Which facts are given?"


def test_bold_step_heading():
    steps = extract_steps("**Step 1: Gather data**\nCollect the numbers.")
    assert steps == [{"title": "Gather data", "content": "Collect the numbers."}]


def test_paragraphs_become_generic_steps():
    steps = extract_steps("First, think about the goal.\n\nThen, act on it.")
    assert steps == [
        {"title": "Step 1", "content": "First, think about the goal."},
        {"title": "Step 2", "content": "Then, act on it."},
    ]


def test_title_only_step_reuses_title_as_content():
    steps = extract_steps("1. Sleep on it")
    assert steps == [{"title": "Sleep on it", "content": "Sleep on it"}]


def test_empty_text():
    assert extract_steps("") == []
    assert extract_steps("   \n  ") == []
