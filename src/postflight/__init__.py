"""Post-task branch, action and feedback handling for CI coding-agent runs."""
