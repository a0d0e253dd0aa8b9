"""SAM AV2 device, commands, key entries, settings and PKI support."""