"""HTTP API for the Skill Graph Engine."""
