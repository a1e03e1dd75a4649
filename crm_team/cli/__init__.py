"""Operator command-line entry points (console scripts ``crm-team`` and ``crm-ban-consistency``)."""
