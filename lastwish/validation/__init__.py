"""Validation package."""

from lastwish.validation.validator import DeliveryReadinessValidator

__all__ = ["DeliveryReadinessValidator"]
