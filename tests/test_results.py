from blender_gateway.results import extract_image, extract_text, is_error_result

RESULT = {
    "content": [
        {"type": "text", "text": "Code executed successfully:"},
        {"type": "image", "data": "iVBORw0KGgo=", "mimeType": "image/png"},
        {"type": "text", "text": "Cube"},
    ],
    "isError": False,
}


def test_extract_text_joins_text_blocks():
    assert extract_text(RESULT) == "Code executed successfully:\nCube"


def test_extract_image_returns_first_image():
    assert extract_image(RESULT) == "iVBORw0KGgo="


def test_helpers_tolerate_unexpected_shapes():
    for value in (None, "text", [], {"content": "nope"}, {"content": [1, None]}):
        assert extract_text(value) == ""
        assert extract_image(value) is None
        assert not is_error_result(value)


def test_is_error_result():
    assert is_error_result({"content": [], "isError": True})
    assert not is_error_result(RESULT)
