"""Schema migrations, applied by ``peerwager init-db``."""
