"""Google Calendar push-notification bookkeeping."""
