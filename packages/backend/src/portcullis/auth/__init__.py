"""Authentication and session state.

Learn: Two ways in, one way to stay in:
1. Local users → username/password → LocalAuthenticator
2. Federated users → identity provider → FederatedIdentityReconciler

Both end with AuthContext.set_user(), which writes the user id into the
signed session cookie. Every later request resolves the current user from
that cookie, once per request.
"""
