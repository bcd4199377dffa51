"""KeyVault Index Meta information.
   KeyVault Index keeps an encrypted, searchable index of secrets, keys
   and certificates spread across many cloud vaults.
"""
__title__ = 'keyvault_index'
__description__ = (
   'Encrypted cache and search index for secrets, keys and certificates '
   'across many cloud vaults.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 KeyVault Index Authors'
__author__ = 'KeyVault Index Authors'
__license__ = 'Apache-2.0'
