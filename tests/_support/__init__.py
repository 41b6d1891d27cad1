"""Test support utilities shared across deploystore test modules."""
