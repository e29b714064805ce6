"""Import services: pipeline driver, resolution cache, transactions, staging, reporting."""
