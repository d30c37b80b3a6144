"""Built-in CLI sub-commands for loopauth.

* :mod:`~loopauth.commands.login` -- ``login``, ``refresh`` and ``console``,
  registered directly on the root app.
* :mod:`~loopauth.commands.config` -- the ``config`` group for viewing and
  modifying the user configuration.
"""
