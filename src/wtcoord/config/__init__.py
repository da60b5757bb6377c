"""Configuration schema and YAML loader."""
