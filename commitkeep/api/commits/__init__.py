"""Read-only commit query resources."""
