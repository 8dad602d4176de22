"""Basic tests to verify the package is importable and functional."""

import vigil


def test_version():
    """Test that version is defined."""
    assert vigil.__version__ == "0.1.0"


def test_exports():
    """Test that main exports are available."""
    assert hasattr(vigil, "Agent")
    assert hasattr(vigil, "BrowserSession")
    assert hasattr(vigil, "EventBus")
    assert hasattr(vigil, "registry")
    assert hasattr(vigil, "ActionResult")


def test_default_actions_registered():
    """Importing the package registers the built-in browser actions."""
    names = set(vigil.registry.actions)
    assert {"navigate", "click", "type_text", "scroll", "switch_tab", "done"} <= names
