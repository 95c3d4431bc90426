"""HTTP surface and dispatch services."""
