"""Agency operations hub: call ingestion, form submission jobs and task automations."""
