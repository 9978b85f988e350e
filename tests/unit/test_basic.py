"""Basic tests to verify project setup."""


def test_import_pgcluster():
    """Test that pgcluster package can be imported."""
    import pgcluster

    assert pgcluster.__version__ == "0.1.0"


def test_import_cli():
    """Test that CLI module can be imported."""
    from pgcluster import cli

    assert cli.app is not None


def test_import_tui():
    """Test that TUI module can be imported."""
    from pgcluster import tui

    assert tui.ClusterTUI is not None


def test_import_models():
    """Test that models module exposes the core types."""
    from pgcluster import models

    assert models.ClusterState is not None
    assert models.ClusterFeatures is not None
    assert models.Node is not None
