"""Store-backed operations built on the level tracker."""
