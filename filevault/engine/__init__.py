"""FileVault Engine — Configuration, errors, logging, sessions, health, runtime."""
