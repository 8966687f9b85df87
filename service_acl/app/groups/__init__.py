"""
Group conversation package.

Resolves member handles through the identity cache, persists the group
and fans out symmetric publish/subscribe grants to every member.
"""
