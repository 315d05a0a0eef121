from .tagging import TagContext, load_tag_context, match_tags, tags_for_event

__all__ = ["TagContext", "load_tag_context", "match_tags", "tags_for_event"]
