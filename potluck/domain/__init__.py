"""Describes the Potluck domain. Centres around recipes and the people who
post them.

Accounts belong to the identity provider. A `Profile` is our local shadow of
one, keyed by the provider's subject identifier, and is brought up to date
every time a session is handed to the server. There is no way to create a
profile that does not correspond to a provider account.

Recipes belong to profiles. Only the author may edit one.
"""
