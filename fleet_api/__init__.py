"""Intent API for managing Fleet resources."""
