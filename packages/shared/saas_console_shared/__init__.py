"""Pydantic schemas shared by the console core and its tooling."""
