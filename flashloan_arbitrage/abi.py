"""
Contract ABIs and call signatures used by the pipeline.
"""

UNISWAP_V2_ROUTER_ABI = [
    {
        "constant": True,
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
        ],
        "name": "getAmountsOut",
        "outputs": [
            {"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}
        ],
        "stateMutability": "view",
        "type": "function",
    },
]

# Execution contract entry points, encoded as flash-loan user data.
EXECUTE_ARB_SIGNATURE = "executeArb(address,uint256,address[],bool,uint256)"
EXECUTE_ARB_TYPES = ["address", "uint256", "address[]", "bool", "uint256"]

EXECUTE_TRIANGULAR_SIGNATURE = "executeTriangularArb(address,uint256,address[],uint256)"
EXECUTE_TRIANGULAR_TYPES = ["address", "uint256", "address[]", "uint256"]

EXECUTE_CROSS_CHAIN_SIGNATURE = "executeCrossChainArb(address,uint256,uint256,uint256)"
EXECUTE_CROSS_CHAIN_TYPES = ["address", "uint256", "uint256", "uint256"]

# Flash-loan provider entry points
BALANCER_FLASH_LOAN_SIGNATURE = "flashLoan(address,address[],uint256[],bytes)"
BALANCER_FLASH_LOAN_TYPES = ["address", "address[]", "uint256[]", "bytes"]

AAVE_FLASH_LOAN_SIMPLE_SIGNATURE = "flashLoanSimple(address,address,uint256,bytes,uint16)"
AAVE_FLASH_LOAN_SIMPLE_TYPES = ["address", "address", "uint256", "bytes", "uint16"]
