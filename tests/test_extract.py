from pymaker.extract import extract_python_code, has_code


def test_fenced_block_with_language():
    assert extract_python_code("```python\nprint('hello')\n```") == "print('hello')"


def test_fenced_block_without_language():
    assert extract_python_code("```\nprint('hello')\n```") == "print('hello')"


def test_plain_text_is_code_as_is():
    assert extract_python_code("  print('hello')\n\n") == "print('hello')"


def test_multiline_block_keeps_inner_layout():
    raw = "```python\ndef hello():\n    print('world')\n\nhello()\n```"
    assert extract_python_code(raw) == "def hello():\n    print('world')\n\nhello()"


def test_commentary_around_block_is_dropped():
    raw = "Sure! Here is the script:\n\n```python\nx = 1\nprint(x)\n```\n\nRun it with python."
    assert extract_python_code(raw) == "x = 1\nprint(x)"


def test_only_first_block_is_used():
    raw = "```python\nfirst()\n```\ntext\n```python\nsecond()\n```"
    assert extract_python_code(raw) == "first()"


def test_empty_block_yields_empty_string():
    assert extract_python_code("```python\n\n```") == ""
    assert not has_code("```python\n   \n```")
    assert not has_code("   ")


def test_reextracting_bare_code_is_noop():
    raw = "```py\nimport os\nprint(os.getcwd())\n```"
    once = extract_python_code(raw)
    assert extract_python_code(once) == once


def test_fenced_round_trip():
    for body in ["print(1)", "  a = 2\nb = 3  ", "\nfor i in range(3):\n    print(i)\n"]:
        assert extract_python_code("```python\n" + body + "\n```") == body.strip()
