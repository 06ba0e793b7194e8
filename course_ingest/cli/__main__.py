"""Allow ``python -m course_ingest.cli`` execution."""

from course_ingest.cli.ingest import main

main()
