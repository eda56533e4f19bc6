"""golden-axe: custom titles and admin housekeeping for Telegram groups."""
