# Session state = what the store knows about "the NOW" of a conversation:

# Current topic (derived from the latest user message)

# Recently active tools (bounded FIFO)

# Context window size and how many times history was compressed

# Chain depth (how many chain contexts deep this session sits)

# The user profile is learned alongside it, one message at a time.
