"""Microblog drafts, platform contracts and the flows that use them."""

from crosspost.blogging.auth import AuthorizationChannel, Authorizer, TurnState
from crosspost.blogging.authorize_flow import AuthorizerFlow
from crosspost.blogging.micro import BlogImage, MicroblogPost
from crosspost.blogging.platform import AuthedPlatform, Platform
from crosspost.blogging.posting import DraftStore, PostingFlow

__all__ = [
    "AuthedPlatform",
    "AuthorizationChannel",
    "Authorizer",
    "AuthorizerFlow",
    "BlogImage",
    "DraftStore",
    "MicroblogPost",
    "Platform",
    "PostingFlow",
    "TurnState",
]
