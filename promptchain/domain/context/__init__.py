# This module handles conversational context
 
#  +---------------------+
# |      Sessions       |   (Persistent, per session id)
# |---------------------|
# | Message history     |
# | User profile        |
# | Domain knowledge    |
# +---------------------+

# +---------------------+
# |      State          |   (Current, updated per message)
# |---------------------|
# | Current topic       |
# | Active tools        |
# | Compression level   |
# | Chain depth         |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |      Retrieved context       |   (Assembled per query)
# |------------------------------|
# | Top-N scored messages        |
# | Matching domain knowledge    |
# | Live user profile            |
# +------------------------------+
#         |
#         v
#   [prompt chain / synthesis]
