"""Hokej-Core: match capacity and registration allocation engine."""
