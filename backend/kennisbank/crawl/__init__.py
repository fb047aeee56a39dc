"""Website crawling."""
