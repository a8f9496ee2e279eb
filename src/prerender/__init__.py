"""Build-and-prerender orchestration for static hosting."""
