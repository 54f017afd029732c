"""Plan/apply execution over a dependency graph.

Both phases walk the graph level by level. Nodes inside a level run on a
bounded thread pool; the next level starts only after every node of the
current one has produced its entry/result.
"""
