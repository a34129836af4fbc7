"""Request/response DTOs and the reservation snapshot payload."""
