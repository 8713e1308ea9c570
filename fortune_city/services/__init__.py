"""Business logic services. Each service wraps one AsyncSession."""
