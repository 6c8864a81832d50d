"""llkeys Meta information.
   llkeys keeps named secrets in a local SM4-encrypted store file.
"""
__title__ = 'llkeys'
__description__ = (
   'Local encrypted credential store with master key '
   'expiry and rotation.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
